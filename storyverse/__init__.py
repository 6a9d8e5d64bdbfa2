"""storyverse - narrative source to story universe transformation pipeline."""
