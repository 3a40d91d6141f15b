"""
サービス層のモジュール
"""
