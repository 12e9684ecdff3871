"""Services: collaborators, stages, pipeline orchestration and job hosting."""
