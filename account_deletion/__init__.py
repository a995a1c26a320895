'''Cascading account deletion for the social platform backend.'''
