"""Domain layer: value objects, enums and the error taxonomy."""
