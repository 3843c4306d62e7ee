"""Domain Layer: value objects, events and the interfaces (ports) the core depends on."""
