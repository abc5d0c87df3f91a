"""Scalar 变换测试：Pow 强度削减。"""
