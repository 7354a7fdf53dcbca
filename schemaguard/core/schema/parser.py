from __future__ import annotations

from typing import List, Optional

from schemaguard.core.errors import PolicyParseError, SchemaError
from schemaguard.core.schema import expressions as ex
from schemaguard.core.schema.lexer import EOF, IDENT, NUMBER, STRING, Token, tokenize
from schemaguard.core.schema.models import (
    AttributeArg,
    AttributeDecl,
    EnumDecl,
    FieldDecl,
    ModelDecl,
    SchemaTree,
)

_KEYWORDS = {"true": True, "false": False, "null": None}

_QUANTIFIERS = (ex.SOME, ex.EVERY, ex.NONE)


class _Parser:
    def __init__(self, text: str):
        self.tokens = tokenize(text)
        self.pos = 0

    # --- token helpers ---

    @property
    def tok(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 1) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def advance(self) -> Token:
        t = self.tokens[self.pos]
        if t.kind != EOF:
            self.pos += 1
        return t

    def error(self, message: str, tok: Optional[Token] = None) -> PolicyParseError:
        t = tok or self.tok
        found = "end of input" if t.kind == EOF else repr(t.value)
        return PolicyParseError(f"{message}, found {found}", line=t.line, column=t.column)

    def expect_symbol(self, value: str) -> Token:
        if not self.tok.is_symbol(value):
            raise self.error(f"Expected '{value}'")
        return self.advance()

    def expect_ident(self, what: str = "identifier") -> Token:
        if self.tok.kind != IDENT:
            raise self.error(f"Expected {what}")
        return self.advance()

    def accept_symbol(self, value: str) -> bool:
        if self.tok.is_symbol(value):
            self.advance()
            return True
        return False

    # --- schema ---

    def parse_schema(self) -> SchemaTree:
        tree = SchemaTree()
        while self.tok.kind != EOF:
            if self.tok.is_keyword("model"):
                tree.models.append(self.parse_model())
            elif self.tok.is_keyword("enum"):
                tree.enums.append(self.parse_enum())
            else:
                raise self.error("Expected 'model' or 'enum'")
        return tree

    def parse_enum(self) -> EnumDecl:
        start = self.advance()
        name = self.expect_ident("enum name").value
        self.expect_symbol("{")
        values: List[str] = []
        while not self.tok.is_symbol("}"):
            values.append(self.expect_ident("enum value").value)
        self.expect_symbol("}")
        return EnumDecl(name=name, values=values, line=start.line)

    def parse_model(self) -> ModelDecl:
        start = self.advance()
        name = self.expect_ident("model name").value
        model = ModelDecl(name=name, line=start.line)
        self.expect_symbol("{")
        while not self.tok.is_symbol("}"):
            if self.tok.is_symbol("@@"):
                self.advance()
                model.attributes.append(self.parse_attribute())
            elif self.tok.kind == IDENT:
                model.fields.append(self.parse_field())
            else:
                raise self.error(f"Expected field or model attribute in model {name}")
        self.expect_symbol("}")
        return model

    def parse_field(self) -> FieldDecl:
        name_tok = self.advance()
        type_tok = self.expect_ident("field type")
        field = FieldDecl(name=name_tok.value, type_name=type_tok.value, line=name_tok.line)
        if self.accept_symbol("?"):
            field.optional = True
        elif self.tok.is_symbol("[") and self.peek().is_symbol("]"):
            self.advance()
            self.advance()
            field.is_list = True
        while self.tok.is_symbol("@"):
            self.advance()
            field.attributes.append(self.parse_attribute())
        return field

    def parse_attribute(self) -> AttributeDecl:
        name_tok = self.expect_ident("attribute name")
        attr = AttributeDecl(name=name_tok.value, line=name_tok.line, column=name_tok.column)
        if self.accept_symbol("("):
            if not self.tok.is_symbol(")"):
                while True:
                    attr.args.append(self.parse_argument())
                    if not self.accept_symbol(","):
                        break
            self.expect_symbol(")")
        return attr

    def parse_argument(self) -> AttributeArg:
        if self.tok.kind == IDENT and self.peek().is_symbol(":"):
            name = self.advance().value
            self.advance()
            return AttributeArg(name=name, value=self.parse_expression())
        return AttributeArg(value=self.parse_expression())

    # --- expressions ---

    def parse_expression(self):
        return self.parse_or()

    def parse_or(self):
        left = self.parse_and()
        while self.tok.is_symbol("||"):
            op = self.advance()
            left = ex.Binary("||", left, self.parse_and(), op.line, op.column)
        return left

    def parse_and(self):
        left = self.parse_unary()
        while self.tok.is_symbol("&&"):
            op = self.advance()
            left = ex.Binary("&&", left, self.parse_unary(), op.line, op.column)
        return left

    def parse_unary(self):
        if self.tok.is_symbol("!"):
            op = self.advance()
            return ex.Unary("!", self.parse_unary(), op.line, op.column)
        return self.parse_comparison()

    def parse_comparison(self):
        left = self.parse_postfix()
        t = self.tok
        if (t.kind == "SYMBOL" and t.value in ex.COMPARISON_OPS) or t.is_keyword("in"):
            op = self.advance()
            right = self.parse_postfix()
            return ex.Binary(op.value, left, right, op.line, op.column)
        return left

    def parse_postfix(self):
        node = self.parse_primary()
        while True:
            t = self.tok
            if t.is_symbol("."):
                self.advance()
                name = self.expect_ident("member name")
                node = ex.Member(node, name.value, name.line, name.column)
            elif t.kind == "SYMBOL" and t.value in _QUANTIFIERS and self.peek().is_symbol("["):
                self.advance()
                self.advance()
                predicate = self.parse_expression()
                self.expect_symbol("]")
                node = ex.CollectionPredicate(node, t.value, predicate, t.line, t.column)
            else:
                return node

    def parse_primary(self):
        t = self.tok
        if t.kind == STRING:
            self.advance()
            return ex.Literal(t.value, t.line, t.column)
        if t.kind == NUMBER:
            self.advance()
            return ex.Literal(_number(t.value), t.line, t.column)
        if t.is_symbol("-") and self.peek().kind == NUMBER:
            self.advance()
            num = self.advance()
            return ex.Literal(-_number(num.value), t.line, t.column)
        if t.is_symbol("("):
            self.advance()
            inner = self.parse_expression()
            self.expect_symbol(")")
            return inner
        if t.is_symbol("["):
            self.advance()
            items = []
            if not self.tok.is_symbol("]"):
                while True:
                    items.append(self.parse_expression())
                    if not self.accept_symbol(","):
                        break
            self.expect_symbol("]")
            return ex.ArrayLiteral(tuple(items), t.line, t.column)
        if t.kind == IDENT:
            self.advance()
            if t.value in _KEYWORDS:
                return ex.Literal(_KEYWORDS[t.value], t.line, t.column)
            if t.value == "this":
                return ex.This(t.line, t.column)
            if self.tok.is_symbol("("):
                self.advance()
                args = []
                if not self.tok.is_symbol(")"):
                    while True:
                        args.append(self.parse_expression())
                        if not self.accept_symbol(","):
                            break
                self.expect_symbol(")")
                return ex.Call(t.value, tuple(args), t.line, t.column)
            return ex.Reference(t.value, t.line, t.column)
        raise self.error("Expected expression")


def _number(text: str):
    return float(text) if "." in text else int(text)


def parse_schema(text: str) -> SchemaTree:
    """Parse schema text into a SchemaTree. Raises PolicyParseError on syntax errors."""
    tree = _Parser(text).parse_schema()
    _check_unique_names(tree)
    return tree


def parse_expression(text: str):
    p = _Parser(text)
    node = p.parse_expression()
    if p.tok.kind != EOF:
        raise p.error("Unexpected trailing input")
    return node


def _check_unique_names(tree: SchemaTree) -> None:
    seen: dict = {}
    for decl in list(tree.models) + list(tree.enums):
        if decl.name in seen:
            raise SchemaError(f"Duplicate declaration '{decl.name}' (line {decl.line})", model=decl.name)
        seen[decl.name] = decl
    for model in tree.models:
        names: set = set()
        for field in model.fields:
            if field.name in names:
                raise SchemaError(
                    f"Duplicate field '{field.name}' in model {model.name}",
                    model=model.name,
                    field=field.name,
                )
            names.add(field.name)
