"""
命令行模块 - relaybot 的 Typer CLI 入口（见 commands.py）。
"""
