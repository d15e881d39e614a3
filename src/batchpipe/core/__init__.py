"""Core pipeline: queue, accumulator, consumer loop and controller."""
