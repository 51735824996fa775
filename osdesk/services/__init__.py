"""
OSDesk - Serviços de domínio
"""
