"""
OSDesk - Gestão de ordens de serviço para assistência técnica
"""
