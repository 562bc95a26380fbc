"""Life-cycle assessment: materials, building elements and embodied carbon."""
