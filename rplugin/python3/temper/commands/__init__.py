"""
Command modules for Temper plugin.

This package contains command handlers organized by functionality:
- debug.py: Status and debug commands
- kernel_mgmt.py: Kernel restart and shutdown commands
- execution.py: Code block execution and notebook commands
"""
