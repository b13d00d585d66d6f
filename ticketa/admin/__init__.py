"""
Platform administration.

- Company approval, suspension and reactivation
- User role management
- Dashboard totals for tickets, trips and revenue
"""
