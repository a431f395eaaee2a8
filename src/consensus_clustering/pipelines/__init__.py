"""Config-driven stage runners"""
