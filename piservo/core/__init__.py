"""
Core Infrastructure Module

Provides foundational services for the servo system including:
- Configuration management
- Logging setup
- Event bus for lifecycle notifications
- Custom exceptions
"""
