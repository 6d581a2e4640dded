"""
kubeprov.store
--------------

Exchange of kubeadm join parameters through an object store. The
parameters of a cluster are kept as a single JSON document under
``<cluster id>/parameters``.
"""
