"""HTTP transport implementations of the CallTransport interface."""
