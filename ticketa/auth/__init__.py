"""Authentication, profiles and role-based authorization"""
