"""Agent contract, pipeline executor and shared collaborators."""
