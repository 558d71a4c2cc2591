"""
Hotel Engines - pure calculation layer.

No I/O, no clock reads: every time-dependent function takes ``now`` or
``as_of`` as a parameter. Engines may import hotel_kernel.domain,
hotel_kernel.exceptions and hotel_kernel.logging_config only.
"""
