"""
Terraform Module Audit System

Статический аудит модулей Terraform:
- Подключение validation-ресурсов через depends_on
- Качество сообщений об ошибках
- Null-safety выражений
- Висячие ссылки и циклы в графе зависимостей

Usage:
    tfaudit audit-ci --path ./modules
"""

__version__ = "1.0.0"
