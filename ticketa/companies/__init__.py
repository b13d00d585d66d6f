"""
Bus company back office: company registration, fleet, routes, weekly
schedules and drivers.
"""
