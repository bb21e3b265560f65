"""MCP protocol layer: registries, dispatcher, server and stdio transport."""

from k8s_mcp.mcp.dispatcher import RequestClass, RequestDispatcher, RequestState
from k8s_mcp.mcp.prompts import PromptRegistry
from k8s_mcp.mcp.resources import ResourceRegistry, parse_resource_uri
from k8s_mcp.mcp.results import ContentPart, PromptResult, ResourceContent, ToolResult
from k8s_mcp.mcp.server import KubernetesMCPServer
from k8s_mcp.mcp.stdio_transport import StdioTransport
from k8s_mcp.mcp.tools import ParamKind, ParamSpec, ToolDescriptor, ToolRegistry

__all__ = [
    "ContentPart", "KubernetesMCPServer", "ParamKind", "ParamSpec",
    "PromptRegistry", "PromptResult", "RequestClass", "RequestDispatcher",
    "RequestState", "ResourceContent", "ResourceRegistry", "StdioTransport",
    "ToolDescriptor", "ToolRegistry", "ToolResult", "parse_resource_uri",
]
