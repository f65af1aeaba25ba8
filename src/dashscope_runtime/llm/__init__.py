"""
DashScope LLM 层：endpoint 路由、请求 DTO 与 HTTP 调用。

说明：
- `endpoint`：EndpointType / ResolvedEndpoint 与纯函数解析器
- `protocol`：DashScopeRequest（DTO + builder）
- `dashscope_http`：非 streaming 的 HTTP 调用层（httpx）
"""
