"""SDK 内置资产（随 package 分发的默认配置）。"""
