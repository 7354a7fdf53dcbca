"""Typed schema tree produced by the parser and consumed by the compiler."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field

SCALAR_TYPES = ("String", "Int", "Float", "Boolean", "DateTime", "Json")


class AttributeArg(BaseModel):
    name: Optional[str] = None
    # expression AST node (schemaguard.core.schema.expressions)
    value: Any = None


class AttributeDecl(BaseModel):
    name: str
    args: List[AttributeArg] = Field(default_factory=list)
    line: int = 0
    column: int = 0


class FieldDecl(BaseModel):
    name: str
    type_name: str
    optional: bool = False
    is_list: bool = False
    attributes: List[AttributeDecl] = Field(default_factory=list)
    line: int = 0

    def attribute(self, name: str) -> Optional[AttributeDecl]:
        for a in self.attributes:
            if a.name == name:
                return a
        return None


class ModelDecl(BaseModel):
    name: str
    fields: List[FieldDecl] = Field(default_factory=list)
    attributes: List[AttributeDecl] = Field(default_factory=list)
    line: int = 0

    def field(self, name: str) -> Optional[FieldDecl]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class EnumDecl(BaseModel):
    name: str
    values: List[str] = Field(default_factory=list)
    line: int = 0


class SchemaTree(BaseModel):
    models: List[ModelDecl] = Field(default_factory=list)
    enums: List[EnumDecl] = Field(default_factory=list)

    def model(self, name: str) -> Optional[ModelDecl]:
        for m in self.models:
            if m.name == name:
                return m
        return None
