"""
成本结算后端
"""
