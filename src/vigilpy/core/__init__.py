"""Core components: pure domain logic behind clock, scheduler and probe ports."""
