"""
Base class for lousy-agents MCP tools.

A tool is a class with a documented ``apply`` method; the server derives the
tool name from the class name and the input schema from ``apply``'s
signature.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from mcp.server.fastmcp.utilities.func_metadata import FuncMetadata, func_metadata

logger = logging.getLogger(__name__)


def success_response(data: Dict[str, Any]) -> str:
    return json.dumps({"success": True, **data}, ensure_ascii=False)


def error_response(error: str) -> str:
    return json.dumps({"success": False, "error": error}, ensure_ascii=False)


class Tool(ABC):
    """Base class for all lousy-agents MCP tools."""

    @classmethod
    def get_name_from_cls(cls) -> str:
        """``AnalyzeInstructionQualityTool`` -> ``analyze_instruction_quality``."""
        name = cls.__name__
        if name.endswith("Tool"):
            name = name[:-4]
        return "".join(["_" + c.lower() if c.isupper() else c for c in name]).lstrip("_")

    def get_name(self) -> str:
        return self.get_name_from_cls()

    @abstractmethod
    def apply(self, **kwargs) -> str:
        """
        Run the tool and return a JSON document as text.

        Implementations return ``success_response(...)`` on success; failures
        are turned into ``error_response(...)`` by :meth:`apply_ex`.
        """

    def get_apply_docstring(self) -> str:
        """Get the docstring for the apply method."""
        docstring = self.apply.__doc__
        if not docstring:
            raise AttributeError(f"apply method has no docstring in {self.__class__}.")
        return docstring.strip()

    def get_apply_fn_metadata(self) -> FuncMetadata:
        """Get metadata for the apply method."""
        return func_metadata(self.apply, skip_names=["self"])

    def apply_ex(self, log_call: bool = True, catch_exceptions: bool = True, **kwargs) -> str:
        """
        Apply the tool with logging and exception handling.

        Logging goes through :mod:`logging` (stderr); stdout belongs to the
        MCP stdio transport.
        """
        try:
            if log_call:
                logger.info("Calling %s with args: %s", self.get_name(), kwargs)

            result = self.apply(**kwargs)

            if log_call:
                logger.debug("Result: %s%s", result[:200], "..." if len(result) > 200 else "")
            return result

        except Exception as e:
            if not catch_exceptions:
                raise
            logger.exception("Error executing tool %s", self.get_name())
            return error_response(f"Error executing tool {self.get_name()}: {e}")
