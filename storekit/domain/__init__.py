"""
Domain layer package housing naming rules, payload codecs and progress reporting.
"""
