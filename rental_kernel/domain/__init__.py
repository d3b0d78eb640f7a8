"""Pure domain layer: money, lifecycle, availability, pricing, authorization."""
