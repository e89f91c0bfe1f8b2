"""Core utilities and shared infrastructure.

- config: Import and decoder configuration loaded from the environment
- constants: Named constants and limits
- exceptions: Pipeline exception taxonomy
"""
