"""Service layer.

``arena.services.generation`` holds the generation orchestration engine;
``arena.services.redact`` holds the log guard shared by every service.
"""
