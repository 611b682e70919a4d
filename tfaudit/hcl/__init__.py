"""
HCL configuration parser.

Contains:
- lexer - токенизация
- ast - дерево выражений и блоков
- parser - разбор файлов и модулей
"""
