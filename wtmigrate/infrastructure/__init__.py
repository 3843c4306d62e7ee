"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (HTTP, file systems, console)
by implementing the interfaces defined in the domain layer.
"""
