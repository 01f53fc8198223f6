"""
后台任务
"""
