"""Pure domain layer: money, currencies, clocks. No I/O."""
