"""
集成测试（integration tests）

说明：
- 该目录下的测试启动本地临时 HTTP server 模拟 npm replicate / RSS，不访问真实 registry。
- 覆盖真实的 urllib 往返、User-Agent、冷启动与 CLI 装配。
"""
