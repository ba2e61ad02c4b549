"""Tool registry for managing MCP tools."""

import importlib
import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from daedra.cache import DEFAULT_CACHE_TTL, ResultCache, fingerprint
from daedra.mcp.errors import TOOL_EXECUTION_ERROR, InvalidParamsError
from daedra.mcp.models import TextContent, Tool, ToolCallResult
from daedra.tools.errors import DaedraError

logger = logging.getLogger(__name__)

# Type alias for tool handlers
ToolHandler = Callable[[Any], Awaitable[list[TextContent]]]


def describe_validation_error(error: ValidationError) -> tuple[str, list[dict[str, str]]]:
    """Flatten a pydantic error into a message and a JSON-safe detail list."""
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "(root)",
            "message": err["msg"],
        }
        for err in error.errors()
    ]
    summary = "; ".join(f"{d['field']}: {d['message']}" for d in details)
    return summary, details


class ToolDefinition:
    """A registered tool with its metadata, argument model and handler."""

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        args_model: type[BaseModel],
        handler: ToolHandler,
        cache_ttl: float | None = None,
        failure_message: str = "Tool execution error",
    ):
        self.name = name
        self.description = description
        self.input_schema = input_schema
        self.args_model = args_model
        self.handler = handler
        self.cache_ttl = cache_ttl
        self.failure_message = failure_message

    def to_mcp_tool(self) -> Tool:
        """Convert to MCP Tool model for protocol responses."""
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema,
        )


class ToolRegistry:
    """Registry for MCP tools with plugin-style provider loading."""

    def __init__(self, cache: ResultCache, default_ttl: float = DEFAULT_CACHE_TTL) -> None:
        self.cache = cache
        self.default_ttl = default_ttl
        self._tools: dict[str, ToolDefinition] = {}
        self._providers: set[str] = set()

    def register(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        args_model: type[BaseModel],
        handler: ToolHandler,
        cache_ttl: float | None = None,
        failure_message: str = "Tool execution error",
    ) -> None:
        """Register a tool with the registry."""
        if name in self._tools:
            logger.warning(f"Tool '{name}' already registered, overwriting")
        self._tools[name] = ToolDefinition(
            name=name,
            description=description,
            input_schema=input_schema,
            args_model=args_model,
            handler=handler,
            cache_ttl=cache_ttl,
            failure_message=failure_message,
        )
        logger.info(f"Registered tool: {name}")

    def get(self, name: str) -> ToolDefinition | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """List all registered tools as MCP Tool models."""
        return [tool.to_mcp_tool() for tool in self._tools.values()]

    def validate_arguments(
        self, name: str, arguments: dict[str, Any] | None
    ) -> tuple[ToolDefinition, BaseModel]:
        """
        Resolve a tool and validate its arguments.

        Raises:
            InvalidParamsError: Unknown tool, or arguments violating its schema.
        """
        tool = self.get(name)
        if tool is None:
            raise InvalidParamsError(f"Unknown tool: {name}")

        try:
            args = tool.args_model.model_validate(arguments or {})
        except ValidationError as e:
            summary, details = describe_validation_error(e)
            raise InvalidParamsError(
                f"Invalid arguments for {name}: {summary}", data=details
            ) from None
        return tool, args

    def ttl_for(self, tool: ToolDefinition) -> float:
        return tool.cache_ttl if tool.cache_ttl is not None else self.default_ttl

    async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> ToolCallResult:
        """
        Call a tool by name with the given arguments.

        Argument problems raise InvalidParamsError before the tool runs.
        Failures of the tool itself come back as an isError result and are
        not cached.
        """
        tool, args = self.validate_arguments(name, arguments)
        key = fingerprint(name, args.model_dump(mode="json"))

        try:
            content = await self.cache.get_or_compute(
                key, self.ttl_for(tool), lambda: tool.handler(args)
            )
            return ToolCallResult(content=content, isError=False)
        except DaedraError as e:
            logger.warning(f"Tool {name} failed: {e}")
            return ToolCallResult(
                content=[TextContent(text=f"{tool.failure_message}: {e}")],
                isError=True,
                errorCode=e.code,
            )
        except Exception as e:
            logger.exception(f"Error executing tool {name}")
            return ToolCallResult(
                content=[TextContent(text=f"{tool.failure_message}: {e}")],
                isError=True,
                errorCode=TOOL_EXECUTION_ERROR,
            )

    def load_provider(self, provider_name: str, options: dict[str, Any] | None = None) -> bool:
        """
        Load a provider module and register its tools.

        Providers are expected to be in daedra/tools/<provider_name>/
        and have a register_tools(registry, options) function.
        """
        if provider_name in self._providers:
            logger.debug(f"Provider '{provider_name}' already loaded")
            return True

        module_path = f"daedra.tools.{provider_name}.tools"
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            logger.warning(f"Could not import provider '{provider_name}': {e}")
            return False

        if not hasattr(module, "register_tools"):
            logger.warning(f"Provider '{provider_name}' has no register_tools function")
            return False

        module.register_tools(self, options or {})
        self._providers.add(provider_name)
        logger.info(f"Loaded provider: {provider_name}")
        return True

    def load_providers(
        self,
        provider_names: list[str],
        provider_options: dict[str, dict[str, Any]] | None = None,
    ) -> dict[str, bool]:
        """Load multiple providers, returning success status for each."""
        provider_options = provider_options or {}
        results = {}
        for name in provider_names:
            results[name] = self.load_provider(name, provider_options.get(name))
        return results

    @property
    def tool_count(self) -> int:
        """Return the number of registered tools."""
        return len(self._tools)

    @property
    def provider_count(self) -> int:
        """Return the number of loaded providers."""
        return len(self._providers)
