"""Install/uninstall orchestration and outcome reporting."""
