"""Classroom points and badge-unlock engine"""
