"""配置加载（YAML overlay + pydantic 校验）。"""
