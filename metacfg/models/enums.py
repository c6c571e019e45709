import enum


class PropertyType(str, enum.Enum):
    BOOL = "BOOL"
    DOUBLE = "DOUBLE"
    LONG = "LONG"
    STRING = "STRING"
    STRING_ARRAY = "STRING_ARRAY"
