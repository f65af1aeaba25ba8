"""`dashscope-runtime` 命令行入口。"""
