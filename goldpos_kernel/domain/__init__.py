"""Pure domain layer: DTOs, clock, and external collaborator protocols."""
