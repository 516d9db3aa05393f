"""
Blueprints for the FabLab dashboard
"""
