"""Trading-hours gate and cycle orchestration"""
