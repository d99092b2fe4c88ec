"""Internal models for parsed operations, tools and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple


HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class Parameter:
    name: str
    location: str
    required: bool = False
    schema: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    overridable: bool = False


@dataclass(frozen=True)
class RequestBody:
    schema: Dict[str, Any]
    required: bool = False
    content_type: str = "application/json"
    description: str = ""


@dataclass(frozen=True)
class Operation:
    operation_id: Optional[str]
    method: str
    path: str
    summary: str = ""
    description: str = ""
    parameters: Tuple[Parameter, ...] = ()
    request_body: Optional[RequestBody] = None


@dataclass(frozen=True)
class SpecDocument:
    title: str
    version: str
    operations: Tuple[Operation, ...]
    servers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: Dict[str, Any]


@dataclass(frozen=True)
class ArgumentBinding:
    location: str
    wire_name: str
    overridable: bool = False


@dataclass(frozen=True)
class OperationBinding:
    tool_name: str
    method: str
    path: str
    arguments: Mapping[str, ArgumentBinding]
    required: FrozenSet[str] = frozenset()
    body_mode: str = "none"
    content_type: Optional[str] = None

    @property
    def idempotent(self) -> bool:
        return self.method.upper() in IDEMPOTENT_METHODS


@dataclass(frozen=True)
class ContentBlock:
    type: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class ToolResult:
    content: Tuple[ContentBlock, ...]
    is_error: bool = False

    @classmethod
    def success(cls, text: str) -> "ToolResult":
        return cls(content=(ContentBlock(type="text", text=text),))

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(content=(ContentBlock(type="text", text=text),), is_error=True)

    def joined_text(self) -> str:
        return "\n".join(block.text for block in self.content if block.type == "text")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": [block.to_dict() for block in self.content],
            "isError": self.is_error,
        }
