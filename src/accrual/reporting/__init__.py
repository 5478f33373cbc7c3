"""Export and chart helpers for simulation results."""
