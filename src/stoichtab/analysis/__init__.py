"""Loading, aggregation, layout and rendering of grouped summary tables."""
