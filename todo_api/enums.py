"""Enumerations stored inside the user configuration blob."""

from enum import Enum


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ThemeMode(str, Enum):
    DARK = "dark"
    LIGHT = "light"


class ContainerStyle(str, Enum):
    BORDERED = "bordered"
    BORDERLESS = "borderless"


class Radius(str, Enum):
    XS = "xs"
    SM = "sm"
    MD = "md"
    LG = "lg"
    XL = "xl"
