from .models import AttributeArg, AttributeDecl, EnumDecl, FieldDecl, ModelDecl, SchemaTree
from .parser import parse_expression, parse_schema

__all__ = [
    "AttributeArg",
    "AttributeDecl",
    "EnumDecl",
    "FieldDecl",
    "ModelDecl",
    "SchemaTree",
    "parse_expression",
    "parse_schema",
]
