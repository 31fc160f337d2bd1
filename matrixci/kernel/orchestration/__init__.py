"""Run orchestration: stage executor, task runner and their components."""
